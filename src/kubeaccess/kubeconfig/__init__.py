"""Kubeconfig assembly and rendering."""

from kubeaccess.kubeconfig.assembler import InvalidEncodingError, assemble
from kubeaccess.kubeconfig.render import render_kubeconfig

__all__ = ["InvalidEncodingError", "assemble", "render_kubeconfig"]
