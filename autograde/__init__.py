"""
autograde — batched vision text-extraction and LLM answer evaluation.

Turns uploaded exam PDFs into progressively persisted text and grades a
student's answer sheet against a question paper and answer key.
"""

__version__ = "0.1.0"
