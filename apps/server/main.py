"""LTEngine translation server entrypoint (FastAPI + LibreTranslate-style API).

Example:
    python -m apps.server.main --model gemma3-1b --host 0.0.0.0 --port 5000
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Any, Sequence

from apps.server.app import DEFAULT_CHAR_LIMIT, create_app
from ltengine.engine.batch import DEFAULT_BATCH_CAPACITY
from ltengine.engine.errors import InferenceError, ModelLoadError
from ltengine.engine.generation import DEFAULT_CTX_RATIO
from ltengine.engine.registry import DEFAULT_BACKEND, list_backends, load_model
from ltengine.engine.sampling import SamplerConfig
from ltengine.engine.translate_engine import TranslateEngine
from ltengine.engine.types import EngineConfig
from ltengine.models import DEFAULT_MODEL, list_models, resolve_model_path


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="LTEngine translation server")
    p.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    p.add_argument("-p", "--port", type=int, default=5000, help="Bind port (default: 5000)")
    p.add_argument(
        "--char-limit",
        type=int,
        default=DEFAULT_CHAR_LIMIT,
        help=f"Max characters per translation request (default: {DEFAULT_CHAR_LIMIT})",
    )
    p.add_argument(
        "-m",
        "--model",
        default=DEFAULT_MODEL,
        choices=list_models(),
        help=f"Model to download and use (default: {DEFAULT_MODEL})",
    )
    p.add_argument("--model-file", default="", help="Path to a .gguf file or model directory (overrides --model)")
    p.add_argument("--api-key", default="", help="Require this API key on /translate (default: none)")
    p.add_argument("--cpu", action="store_true", help="Run on CPU even if an accelerator is available")
    p.add_argument("--dtype", default="auto", help="Torch dtype: auto|float16|bfloat16|float32 (default: auto)")
    p.add_argument(
        "--backend",
        default=DEFAULT_BACKEND,
        choices=list_backends(),
        help=f"Model backend (default: {DEFAULT_BACKEND})",
    )

    p.add_argument("--top-k", type=int, default=40, help="Top-K sampling (<= 0 disables; default: 40)")
    p.add_argument("--top-p", type=float, default=0.95, help="Nucleus sampling threshold (default: 0.95)")
    p.add_argument("--temperature", type=float, default=0.8, help="Sampling temperature (0 = greedy; default: 0.8)")
    p.add_argument("--seed", type=int, default=42, help="Sampler seed (default: 42)")
    p.add_argument(
        "--ctx-ratio",
        type=float,
        default=DEFAULT_CTX_RATIO,
        help=f"Context budget as a multiple of the prompt length (default: {DEFAULT_CTX_RATIO:g})",
    )
    p.add_argument("--max-context-tokens", type=int, default=0, help="Hard cap on the context budget (0 = none)")
    p.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_CAPACITY,
        help=f"Prompt priming chunk size in tokens (default: {DEFAULT_BATCH_CAPACITY})",
    )
    p.add_argument("--no-chat-template", action="store_true", help="Send the raw instruction without a chat template")
    p.add_argument(
        "--no-echo-on-failure",
        dest="echo_on_failure",
        action="store_false",
        help="Return an HTTP error instead of the input text when translation fails",
    )

    warmup_group = p.add_mutually_exclusive_group()
    warmup_group.add_argument(
        "--warmup",
        dest="warmup",
        action="store_true",
        help="Translate a short sentence after model load",
    )
    warmup_group.add_argument(
        "--no-warmup",
        dest="warmup",
        action="store_false",
        help="Disable startup warmup (default)",
    )
    p.set_defaults(warmup=False)

    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return p.parse_args(argv)


def _dtype_from_string(dtype: str) -> Any:
    dt = dtype.strip().lower()
    if dt == "auto":
        return None

    import torch

    if dt in {"fp16", "float16", "half"}:
        return torch.float16
    if dt in {"bf16", "bfloat16"}:
        return torch.bfloat16
    if dt in {"fp32", "float32"}:
        return torch.float32
    raise ValueError(f"Unknown dtype: {dtype!r}")


def _engine_config(args: argparse.Namespace) -> EngineConfig:
    return EngineConfig(
        ctx_ratio=float(args.ctx_ratio),
        max_context_tokens=None if args.max_context_tokens <= 0 else int(args.max_context_tokens),
        batch_capacity=int(args.batch_size),
        use_chat_template=not args.no_chat_template,
        sampler=SamplerConfig(
            top_k=int(args.top_k),
            top_p=float(args.top_p),
            temperature=float(args.temperature),
            seed=int(args.seed),
        ),
    )


def _run_blocking_warmup(engine: TranslateEngine) -> None:
    t0 = time.time()
    print("[warmup] starting: en -> it", flush=True)
    try:
        result = engine.translate("The world is on fire.", "en", "it")
    except InferenceError as exc:
        print(f"[warmup] failed: {exc}", flush=True)
        return
    dt = time.time() - t0
    print(
        f"[warmup] done in {dt:.2f}s: {result.text!r} "
        f"(prompt_tokens={result.prompt_tokens} completion_tokens={result.completion_tokens})",
        flush=True,
    )


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = _engine_config(args)
        config.sampler.validate()
        dtype = _dtype_from_string(args.dtype)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr, flush=True)
        sys.exit(1)

    try:
        model_path = resolve_model_path(args.model, args.model_file)
        print(
            "[server] loading model... "
            f"path={str(model_path)!r} backend={args.backend!r} cpu={bool(args.cpu)} dtype={args.dtype!r}",
            flush=True,
        )
        handle = load_model(str(model_path), use_cpu=args.cpu, backend=args.backend, dtype=dtype)
    except ModelLoadError as exc:
        print(f"Failed to load model: {exc}", file=sys.stderr, flush=True)
        sys.exit(1)
    print("[server] model loaded", flush=True)

    engine = TranslateEngine(handle, config=config)

    if bool(args.warmup):
        _run_blocking_warmup(engine)

    model_id = args.model if not args.model_file else model_path.name
    app = create_app(
        engine=engine,
        model_id=model_id,
        char_limit=args.char_limit,
        api_key=args.api_key,
        echo_on_failure=args.echo_on_failure,
    )

    import uvicorn

    print(f"[server] listening on http://{args.host}:{args.port}", flush=True)
    try:
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_level="debug" if args.verbose else "info",
        )
    finally:
        engine.shutdown()


if __name__ == "__main__":
    main()
