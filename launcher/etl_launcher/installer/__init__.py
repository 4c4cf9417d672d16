"""
installer module: host-side provisioning and multi-instance compose generation.
"""

from .composer import ComposeOptions, InstanceComposer, InstanceSpec, default_port, make_instance
from .prompts import Prompter

__all__ = [
    "ComposeOptions",
    "InstanceComposer",
    "InstanceSpec",
    "Prompter",
    "default_port",
    "make_instance",
]
