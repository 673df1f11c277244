"""Shared fixtures: in-memory DOCX builders and change record factories."""

from io import BytesIO
from xml.sax.saxutils import escape

import pytest
from docx import Document
from docx.oxml import parse_xml
from docx.oxml.ns import nsdecls, qn

from citesync.config import Config
from citesync.core.models import ChangeRecord, ChangeType


def build_docx(paragraphs, references=None, heading="References"):
    """Build a DOCX in memory.

    Each paragraph is a string (one run) or a list of runs, where a run is a
    string or a ``(text, bold)`` tuple.
    """
    document = Document()

    def add(layout):
        paragraph = document.add_paragraph()
        runs = [layout] if isinstance(layout, str) else layout
        for run in runs:
            text, bold = (run, False) if isinstance(run, str) else run
            paragraph.add_run(text).bold = bold

    for layout in paragraphs:
        add(layout)
    if references is not None:
        document.add_heading(heading, level=1)
        for layout in references:
            add(layout)

    output = BytesIO()
    document.save(output)
    return output.getvalue()


def paragraph_xml(*runs):
    """A lone ``w:p`` element; runs are strings or ``(text, bold)`` tuples."""
    parts = []
    for run in runs:
        text, bold = (run, False) if isinstance(run, str) else run
        properties = "<w:rPr><w:b/></w:rPr>" if bold else ""
        parts.append(f'<w:r>{properties}<w:t xml:space="preserve">{escape(text)}</w:t></w:r>')
    return parse_xml(f"<w:p {nsdecls('w')}>{''.join(parts)}</w:p>")


def body_texts(content):
    """Visible text (inserted text included, deleted text excluded) per paragraph."""
    document = Document(BytesIO(content))
    return [
        "".join(t.text or "" for t in p.iter(qn("w:t")))
        for p in document.element.body.iter(qn("w:p"))
    ]


def open_docx(content):
    return Document(BytesIO(content))


@pytest.fixture
def config():
    return Config(revision_author="Test Author")


@pytest.fixture
def make_record():
    """Factory for change records with sequential ids."""
    counter = {"n": 0}

    def factory(change_type, before, after, citation_id=None, document_id="doc-1", **kwargs):
        counter["n"] += 1
        return ChangeRecord(
            id=kwargs.pop("id", f"chg-{counter['n']}"),
            document_id=document_id,
            change_type=ChangeType(change_type),
            before_text=before,
            after_text=after,
            citation_id=citation_id,
            applied_at=kwargs.pop("applied_at", counter["n"]),
            **kwargs,
        )

    return factory
