"""
First-match tag scanning for EC2/SNS query API responses.

This is deliberately not an XML parser. For a tag name ``t`` it finds the
next ``<t>``, then the next ``</t>`` after it, records the text in between
and resumes scanning after the ``</t>``. Consequences callers rely on:

- attributes are not understood: ``<t attr="x">`` does not match ``<t>``;
- same-name nesting is not understood: in ``<t><t>x</t></t>`` the first
  match is ``<t>x`` and the trailing ``</t>`` is ignored;
- content is returned verbatim (no entity decoding, no whitespace trimming).

Scoping a lookup to a container is done by extracting the container first
(e.g. ``<volume>``) and scanning its contents for the inner tag.
"""

from __future__ import annotations

from ami_orch.errors import ExtractionError, MalformedTagError


def extract_all(text: str, tag: str) -> list[str]:
    """
    Return the contents of every top-level ``<tag>...</tag>``, in document order.

    Returns an empty list when the tag does not occur.

    Raises:
        MalformedTagError: an opening tag has no closing tag before end of text
    """
    open_tag = f"<{tag}>"
    close_tag = f"</{tag}>"

    values: list[str] = []
    pos = 0
    while True:
        start = text.find(open_tag, pos)
        if start == -1:
            break
        start += len(open_tag)

        end = text.find(close_tag, start)
        if end == -1:
            raise MalformedTagError(tag, text)

        values.append(text[start:end])
        pos = end + len(close_tag)

    return values


def extract_one(text: str, tag: str) -> str:
    """
    Return the contents of the first ``<tag>...</tag>``.

    Raises:
        ExtractionError: the tag does not occur
        MalformedTagError: an opening tag has no closing tag
    """
    values = extract_all(text, tag)
    if not values:
        raise ExtractionError(tag, text)
    return values[0]


def find_one(text: str, tag: str) -> str | None:
    """Like extract_one, but an absent tag is None rather than an error."""
    values = extract_all(text, tag)
    return values[0] if values else None
