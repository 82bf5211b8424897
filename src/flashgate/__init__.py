"""FlashGate - lease-gated firmware updates for cluster accelerator cards."""

__version__ = "0.1.0"
