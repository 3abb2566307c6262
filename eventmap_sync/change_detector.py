"""
Section-level change detection between two rendered documents.

Sections are keyed by their ``## `` heading text, so detection sees
events being added or removed but not edits inside an existing section.
"""

from dataclasses import dataclass, field

from .markdown_renderer import HEADING_PREFIX


@dataclass(frozen=True)
class ChangeSet:
    """Section keys added, removed and kept between two documents."""
    
    added: frozenset[str] = field(default_factory=frozenset)
    removed: frozenset[str] = field(default_factory=frozenset)
    unchanged: frozenset[str] = field(default_factory=frozenset)
    
    @property
    def is_noop(self) -> bool:
        """True when no section key was added or removed."""
        return not self.added and not self.removed
    
    def to_dict(self) -> dict:
        """Sorted lists, for logs and endpoint payloads."""
        return {
            "added": sorted(self.added),
            "removed": sorted(self.removed),
            "unchanged": sorted(self.unchanged),
        }


def extract_section_keys(text: str) -> list[str]:
    """
    Section headings of a document, in document order.
    
    Duplicate headings are returned as often as they appear; callers that
    diff treat them as a single key.
    """
    return [
        line[len(HEADING_PREFIX):].rstrip()
        for line in text.splitlines()
        if line.startswith(HEADING_PREFIX)
    ]


def diff_documents(previous_text: str, candidate_text: str) -> ChangeSet:
    """
    Compare two documents by section key.
    
    Args:
        previous_text: The document currently stored remotely ("" if none).
        candidate_text: The freshly rendered document.
        
    Returns:
        ChangeSet of the section keys.
    """
    previous = set(extract_section_keys(previous_text))
    candidate = set(extract_section_keys(candidate_text))
    
    return ChangeSet(
        added=frozenset(candidate - previous),
        removed=frozenset(previous - candidate),
        unchanged=frozenset(candidate & previous),
    )


def generate_commit_message(changes: ChangeSet, is_initial: bool = False) -> str:
    """
    Generate a Conventional Commits message for a document update.
    
    Examples:
        initial, 3 events -> "docs(events): initial sync of 3 events"
        1 added           -> "docs(events): add 1 event" + body listing it
        2 added, 1 removed -> "docs(events): add 2 events, remove 1 event"
    """
    def count(n: int) -> str:
        return f"{n} event{'s' if n != 1 else ''}"
    
    if is_initial:
        return f"docs(events): initial sync of {count(len(changes.added))}"
    
    actions = []
    body = []
    if changes.added:
        actions.append(f"add {count(len(changes.added))}")
        body.append(f"Added: {', '.join(sorted(changes.added))}")
    if changes.removed:
        actions.append(f"remove {count(len(changes.removed))}")
        body.append(f"Removed: {', '.join(sorted(changes.removed))}")
    
    if not actions:
        return "docs(events): sync latest changes"
    
    return f"docs(events): {', '.join(actions)}\n\n" + "\n".join(body)
