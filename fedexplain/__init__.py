"""
Simulated federated learning with post-hoc explainability.

This package partitions one tabular dataset across simulated participants,
runs federated averaging rounds over them, and explains trained models with
permutation importance and a LIME-style local surrogate.

Key modules:
- fedexplain.data: CSV loading, participant partitioning, feature preprocessing
- fedexplain.models: model architectures and the shared training loop
- fedexplain.fl: participant training, aggregation and the round orchestrator
- fedexplain.explain: permutation importance and local surrogate explanations
- fedexplain.utils: logging, config, metrics, serialization utilities
- fedexplain.experiments: experiment runner
- fedexplain.session: session object tying the components together
"""

__version__ = "0.1.0"
