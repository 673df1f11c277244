"""DOCX patching."""
from .assembler import AssemblyResult, DocumentAssembler
from .patcher import PatchResult, RunSpanningPatcher

__all__ = ["AssemblyResult", "DocumentAssembler", "PatchResult", "RunSpanningPatcher"]
