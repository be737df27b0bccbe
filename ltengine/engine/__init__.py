# Translation inference engine
#
# This package runs translation prompts through a locally loaded causal LM,
# one generation at a time.
#
# Key components:
#   - adapters/            Model backends (ModelHandle / InferenceContext)
#   - registry.py          Maps backend names to handle classes
#   - generation.py        Priming -> Sampling -> Done loop
#   - sampling.py          Top-K -> Top-P -> temperature -> seeded draw
#   - streaming.py         Incremental UTF-8 detokenization
#   - translate_engine.py  Single-flight engine used by the HTTP layer
