"""Backend for HuggingFace Transformers causal LMs (.gguf files or model directories)."""

from __future__ import annotations

import gc
import json
import logging
import os
import re
from typing import TYPE_CHECKING, Any

from ...runtime import free_accelerator_memory, is_gguf_available, select_device
from ..errors import ContextAllocationError, DecodeError, ModelLoadError, TokenizationError
from .base import InferenceContext, ModelHandle

if TYPE_CHECKING:
    import torch

    from ..batch import Batch

logger = logging.getLogger(__name__)

_BYTE_PIECE_RE = re.compile(r"<0x([0-9A-Fa-f]{2})>")
_SPIECE_UNDERLINE = "▁"
_END_OF_TURN_MARKERS = ("<end_of_turn>", "<|eot_id|>", "<|im_end|>", "<|endoftext|>")


def _bytes_to_unicode() -> dict[int, str]:
    """GPT-2 byte-level BPE table: byte value -> printable stand-in character."""
    bs = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    cs = bs[:]
    n = 0
    for b in range(256):
        if b not in bs:
            bs.append(b)
            cs.append(256 + n)
            n += 1
    return dict(zip(bs, (chr(c) for c in cs)))


def _uses_byte_level_decoder(tokenizer: Any) -> bool:
    backend = getattr(tokenizer, "backend_tokenizer", None)
    if backend is None:
        return getattr(tokenizer, "byte_decoder", None) is not None
    try:
        decoder = json.loads(backend.to_str()).get("decoder") or {}
    except ValueError:
        return False
    return '"ByteLevel"' in json.dumps(decoder)


# =============================================================================
# Context
# =============================================================================


class HFInferenceContext(InferenceContext):
    """KV cache for one generation against an HFModelHandle.

    The cache is grown by the model on each forward pass; the context bounds
    it to `n_ctx` positions.
    """

    def __init__(self, handle: HFModelHandle, n_ctx: int) -> None:
        super().__init__(n_ctx)
        self._handle = handle
        self._past_key_values: Any = None
        self._last_logits: dict[int, torch.Tensor] = {}
        self._last_n_tokens = 0

    def decode(self, batch: Batch) -> None:
        import torch

        if self._closed:
            raise DecodeError("Context is closed")
        n_tokens = batch.n_tokens
        if n_tokens == 0:
            raise DecodeError("Cannot decode an empty batch")

        positions = list(batch.positions)
        if positions != list(range(self._n_past, self._n_past + n_tokens)):
            raise DecodeError(
                f"Batch positions {positions[0]}..{positions[-1]} do not continue the cache at {self._n_past}"
            )
        if positions[-1] >= self._n_ctx:
            raise DecodeError(f"Position {positions[-1]} exceeds context size {self._n_ctx}")

        device = self._handle.input_device
        input_ids = torch.tensor([batch.tokens], dtype=torch.long, device=device)
        cache_position = torch.tensor(positions, dtype=torch.long, device=device)

        try:
            with torch.no_grad():
                outputs = self._handle.model(
                    input_ids,
                    past_key_values=self._past_key_values,
                    cache_position=cache_position,
                    position_ids=cache_position.unsqueeze(0),
                    use_cache=True,
                )
        except (RuntimeError, ValueError, IndexError) as exc:
            raise DecodeError(f"Forward pass failed: {exc}") from exc

        self._past_key_values = outputs.past_key_values
        self._n_past += n_tokens
        self._last_n_tokens = n_tokens

        logits = outputs.logits[0]
        self._last_logits = {i: logits[i].detach().float().cpu() for i in batch.output_indices()}

    def logits(self, index: int) -> torch.Tensor:
        slot = index + self._last_n_tokens if index < 0 else index
        try:
            return self._last_logits[slot]
        except KeyError:
            raise DecodeError(f"No logits were requested for batch slot {index}") from None

    def close(self) -> None:
        if self._closed:
            return
        self._past_key_values = None
        self._last_logits = {}
        gc.collect()
        free_accelerator_memory()
        super().close()


# =============================================================================
# Model handle
# =============================================================================


class HFModelHandle(ModelHandle):
    """
    Model handle backed by `transformers`.

    Thread Safety:
        The handle itself is read-only after load, but forward passes against it
        are NOT safe to run concurrently. Callers must serialize generations
        (see TranslateEngine).

    Example:
        >>> handle = HFModelHandle.load("models/gemma-3-1b-it-q4_0.gguf")
        >>> tokens = handle.tokenize("Hello!")
        >>> with handle.create_context(3 * len(tokens)) as ctx:
        ...     ...
    """

    backend_name = "hf"

    def __init__(self, model: Any, tokenizer: Any, *, model_path: str, device: str, dtype: Any) -> None:
        self._model = model
        self._tokenizer = tokenizer
        self._model_path = model_path
        self._device = device
        self._dtype = dtype
        self._eog_ids = frozenset(self._collect_eog_ids())
        self._special_ids = frozenset(int(i) for i in (getattr(tokenizer, "all_special_ids", None) or []))
        self._byte_decoder: dict[str, int] | None = None
        if _uses_byte_level_decoder(tokenizer):
            self._byte_decoder = {c: b for b, c in _bytes_to_unicode().items()}

    # -------------------------------------------------------------------------
    # Loading / Unloading
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, model_path: str, *, use_cpu: bool = False, dtype: Any = None) -> HFModelHandle:
        """Load weights and tokenizer.

        Args:
            model_path: A `.gguf` file or a local HuggingFace model directory.
            use_cpu: Force CPU execution even if CUDA is available.
            dtype: Torch dtype (default: float16 on CUDA, float32 on CPU).

        Raises:
            ModelLoadError: missing path, unsupported file, or load failure.
        """
        model_path = os.fspath(model_path)
        if not os.path.exists(model_path):
            raise ModelLoadError(f"Model path does not exist: {model_path}")

        source = model_path
        extra: dict[str, Any] = {}
        if os.path.isfile(model_path):
            if not model_path.endswith(".gguf"):
                raise ModelLoadError(f"Unsupported model file (expected .gguf): {model_path}")
            if not is_gguf_available():
                raise ModelLoadError("Loading .gguf files requires the 'gguf' package")
            source = os.path.dirname(os.path.abspath(model_path))
            extra["gguf_file"] = os.path.basename(model_path)

        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer

        device = select_device(use_cpu)
        if dtype is None:
            dtype = torch.float16 if device == "cuda" else torch.float32

        logger.info("Loading model %s on %s (%s)", model_path, device, dtype)
        try:
            tokenizer = AutoTokenizer.from_pretrained(source, **extra)
            model = AutoModelForCausalLM.from_pretrained(
                source,
                torch_dtype=dtype,
                # "auto" offloads every layer that fits onto the accelerator.
                device_map="auto" if device == "cuda" else "cpu",
                low_cpu_mem_usage=True,
                **extra,
            )
        except (OSError, ValueError, RuntimeError, KeyError) as exc:
            raise ModelLoadError(f"Unable to load model from {model_path}: {exc}") from exc

        model.eval()
        return cls(model, tokenizer, model_path=model_path, device=device, dtype=dtype)

    def unload(self) -> None:
        """Unload the model and free accelerator memory."""
        self._model = None
        self._tokenizer = None
        gc.collect()
        free_accelerator_memory()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def model(self) -> Any:
        self._ensure_loaded()
        return self._model

    @property
    def tokenizer(self) -> Any:
        self._ensure_loaded()
        return self._tokenizer

    @property
    def input_device(self) -> Any:
        """Device that input tensors must be placed on."""
        return self.model.device

    @property
    def vocab_size(self) -> int:
        return len(self.tokenizer)

    @property
    def max_context_length(self) -> int | None:
        config = self.model.config
        get_text_config = getattr(config, "get_text_config", None)
        if callable(get_text_config):
            config = get_text_config()
        value = getattr(config, "max_position_embeddings", None)
        return int(value) if value else None

    @property
    def model_info(self) -> dict[str, Any]:
        return {
            "model_path": self._model_path,
            "backend": self.backend_name,
            "device": self._device,
            "dtype": str(self._dtype),
            "loaded": self._model is not None,
            "vocab_size": self.vocab_size if self._model is not None else None,
            "max_context_length": self.max_context_length if self._model is not None else None,
        }

    # -------------------------------------------------------------------------
    # Vocabulary
    # -------------------------------------------------------------------------

    def tokenize(self, text: str, *, add_special: bool = True) -> list[int]:
        try:
            ids = self.tokenizer.encode(text, add_special_tokens=add_special)
        except (TypeError, ValueError, RuntimeError) as exc:
            raise TokenizationError(f"Unable to tokenize input: {exc}") from exc
        return [int(i) for i in ids]

    def render_chat(self, user_message: str) -> str | None:
        tokenizer = self.tokenizer
        if not getattr(tokenizer, "chat_template", None):
            return None
        try:
            return tokenizer.apply_chat_template(
                [{"role": "user", "content": user_message}],
                tokenize=False,
                add_generation_prompt=True,
            )
        except Exception as exc:
            raise TokenizationError(f"Unable to apply chat template: {exc}") from exc

    def token_to_bytes(self, token: int) -> bytes:
        token = int(token)
        if token in self._special_ids:
            return b""
        piece = self.tokenizer.convert_ids_to_tokens(token)
        if not piece:
            return b""

        match = _BYTE_PIECE_RE.fullmatch(piece)
        if match:
            return bytes([int(match.group(1), 16)])
        if self._byte_decoder is not None:
            try:
                return bytes(self._byte_decoder[ch] for ch in piece)
            except KeyError:
                return piece.encode("utf-8")
        return piece.replace(_SPIECE_UNDERLINE, " ").encode("utf-8")

    def token_is_eog(self, token: int) -> bool:
        return int(token) in self._eog_ids

    # -------------------------------------------------------------------------
    # Contexts
    # -------------------------------------------------------------------------

    def create_context(self, token_budget: int) -> HFInferenceContext:
        budget = int(token_budget)
        if budget <= 0:
            raise ContextAllocationError(f"Token budget must be positive, got {token_budget}")
        limit = self.max_context_length
        if limit is not None and budget > limit:
            raise ContextAllocationError(f"Token budget {budget} exceeds the model context length {limit}")
        return HFInferenceContext(self, budget)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        """Raise if model/tokenizer not loaded."""
        if self._model is None or self._tokenizer is None:
            raise RuntimeError("Model not loaded. Call load() first.")

    def _collect_eog_ids(self) -> set[int]:
        ids: set[int] = set()
        candidates = [getattr(self._tokenizer, "eos_token_id", None)]
        for cfg in (getattr(self._model, "generation_config", None), getattr(self._model, "config", None)):
            candidates.append(getattr(cfg, "eos_token_id", None))
        for value in candidates:
            if value is None:
                continue
            if isinstance(value, (list, tuple, set)):
                ids.update(int(v) for v in value)
            else:
                ids.add(int(value))

        # GGUF conversions often record only <eos>; chat models end a turn with their own marker.
        convert = getattr(self._tokenizer, "convert_tokens_to_ids", None)
        if callable(convert):
            unk = getattr(self._tokenizer, "unk_token_id", None)
            for marker in _END_OF_TURN_MARKERS:
                token_id = convert(marker)
                if token_id is None or token_id == unk:
                    continue
                if self._tokenizer.convert_ids_to_tokens(int(token_id)) == marker:
                    ids.add(int(token_id))
        return ids
