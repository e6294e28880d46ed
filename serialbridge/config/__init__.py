from serialbridge.config.linkspec import (
    DEFAULT_BAUDRATE,
    DEFAULT_BAUDRATES,
    FramingSpec,
    LinkSpec,
    LoggingSpec,
    NegotiationSpec,
    load_linkspec,
    save_linkspec,
)

__all__ = [
    "LinkSpec",
    "FramingSpec",
    "NegotiationSpec",
    "LoggingSpec",
    "DEFAULT_BAUDRATE",
    "DEFAULT_BAUDRATES",
    "load_linkspec",
    "save_linkspec",
]
