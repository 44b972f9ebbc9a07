"""
Retrieval Vocabulary - Insurance keywords and query synonyms.

The keyword list drives the keyword pool of hybrid search; the synonym table
widens the text that gets embedded. Both live in a versionable JSON file so
they can be tuned without a code change.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from policyrag.config import DEFAULT_VOCABULARY_PATH
from policyrag.utils import setup_logging

logger = setup_logging()


@dataclass
class RetrievalVocabulary:
    keywords: list[str] = field(default_factory=list)
    synonyms: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path = DEFAULT_VOCABULARY_PATH) -> "RetrievalVocabulary":
        """
        Load the vocabulary file.

        Raises:
            ValueError: If the file is not a keyword/synonym document
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        keywords = data.get("keywords")
        synonyms = data.get("synonyms", {})
        if not isinstance(keywords, list) or not isinstance(synonyms, dict):
            raise ValueError(f"Invalid retrieval vocabulary in {path}")

        vocabulary = cls(
            keywords=[str(k).lower() for k in keywords],
            synonyms={str(term).lower(): [str(s) for s in values] for term, values in synonyms.items()},
        )
        logger.debug(
            f"Loaded retrieval vocabulary from {path}: "
            f"{len(vocabulary.keywords)} keywords, {len(vocabulary.synonyms)} synonym terms"
        )
        return vocabulary

    def expand_query(self, query: str) -> str:
        """Append the synonyms of every table term found in the query."""
        lowered = query.lower()
        additions: list[str] = []
        for term, synonyms in self.synonyms.items():
            if term in lowered:
                for synonym in synonyms:
                    if synonym not in additions:
                        additions.append(synonym)

        if not additions:
            return query
        return f"{query} {' '.join(additions)}"

    def extract_keywords(self, query: str) -> list[str]:
        """Keywords from the list that occur in the query, in list order."""
        lowered = query.lower()
        return [keyword for keyword in self.keywords if keyword in lowered]
