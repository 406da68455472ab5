"""Generation job orchestration for funnel and asset-set builds."""

__version__ = "0.1.0"
