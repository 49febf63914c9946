"""Clause-structure checks for passage syntax analyses.

The gateway returns clauses with parent links only; ``link_child_clauses``
fills in the reverse links and ``check_word_coverage`` rejects analyses
that leave a word out or put one in two clauses.
"""

from typing import Dict, List

from .models import BiblicalPassage, Clause, PassageSyntaxAnalysis


def link_child_clauses(clauses: List[Clause]) -> List[Clause]:
    children: Dict[str, List[str]] = {}
    for clause in clauses:
        if clause.parent_clause_id:
            children.setdefault(clause.parent_clause_id, []).append(clause.id)
    return [
        clause.model_copy(update={"child_clause_ids": children.get(clause.id, [])})
        for clause in clauses
    ]


def check_word_coverage(analysis: PassageSyntaxAnalysis, passage: BiblicalPassage) -> None:
    """Raises ValueError unless every word index sits in exactly one clause."""
    total = len(passage.words)
    covered = set()

    for clause in analysis.clauses:
        for index in clause.word_indices:
            if index < 0 or index >= total:
                raise ValueError(
                    f"Clause {clause.id} contains invalid word index {index}. "
                    f"Valid range is 0-{total - 1}"
                )
            if index in covered:
                raise ValueError(
                    f"Word at index {index} ({passage.words[index].greek}) "
                    f"appears in multiple clauses"
                )
            covered.add(index)

    orphaned = [i for i in range(total) if i not in covered]
    if orphaned:
        words = ", ".join(passage.words[i].greek for i in orphaned)
        raise ValueError(
            f"Analysis is incomplete; words not assigned to any clause: {words} "
            f"(indices: {', '.join(str(i) for i in orphaned)})"
        )
