"""Document search function offered to the model in deep mode."""

import copy
import json
import logging
from dataclasses import dataclass, field

from backend.ragchat.models.docs import RetrievalResult
from backend.ragchat.orchestration.personas import PERSONAS, Persona

logger = logging.getLogger(__name__)

SEARCH_FUNCTION_NAME = "search_practice_documents"
DEFAULT_FUNCTION_TOP_K = 5
PRACTICE_DOCUMENTS_HEADER = "\n\n**Based on practice documents:**\n"

SEARCH_PRACTICE_DOCUMENTS = {
    "name": SEARCH_FUNCTION_NAME,
    "description": (
        "Search practice-specific documents for relevant information to answer user questions"
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query for finding relevant practice documents",
            },
            "tenant": {
                "type": "string",
                "enum": sorted(PERSONAS),
                "description": "Practice identifier for tenant-specific search",
            },
            "documentTypes": {
                "type": "array",
                "items": {"type": "string"},
                "description": (
                    "Optional filter for specific document types (protocols, procedures, policies)"
                ),
            },
            "topK": {
                "type": "number",
                "description": "Number of relevant documents to retrieve (default: 5)",
                "default": DEFAULT_FUNCTION_TOP_K,
            },
        },
        "required": ["query", "tenant"],
    },
}


def search_function_definition(persona: Persona) -> dict:
    """Function definition offered for a persona.

    Practice personas pin ``tenant`` to their own id and restrict
    ``documentTypes`` to the types their practice keeps.
    """
    definition = copy.deepcopy(SEARCH_PRACTICE_DOCUMENTS)
    properties = definition["parameters"]["properties"]
    if persona.id in PERSONAS:
        properties["tenant"]["enum"] = [persona.id]
    if persona.document_types:
        properties["documentTypes"]["items"]["enum"] = list(persona.document_types)
    return definition


@dataclass
class PendingFunctionCall:
    """Function call assembled from streamed fragments."""

    name: str = ""
    arguments: str = ""

    def add_fragment(self, name: str | None, arguments: str) -> None:
        if name:
            self.name = name
        self.arguments += arguments


@dataclass(frozen=True)
class SearchArguments:
    """Parsed ``search_practice_documents`` arguments."""

    query: str
    document_types: list[str] = field(default_factory=list)
    top_k: int = DEFAULT_FUNCTION_TOP_K


def parse_search_arguments(raw: str, fallback_query: str) -> SearchArguments:
    """Parse the accumulated JSON arguments.

    Unparseable or missing fields fall back to searching for the user's own
    message with default settings.
    """
    try:
        data = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        logger.warning(f"Unparseable function arguments, using user message: {raw[:200]!r}")
        data = {}

    if not isinstance(data, dict):
        data = {}

    query = data.get("query")
    if not isinstance(query, str) or not query.strip():
        query = fallback_query

    top_k = data.get("topK", DEFAULT_FUNCTION_TOP_K)
    if not isinstance(top_k, (int, float)) or top_k < 1:
        top_k = DEFAULT_FUNCTION_TOP_K

    document_types = data.get("documentTypes") or []
    if not isinstance(document_types, list):
        document_types = []

    # tenant is not read back: the request's own persona scopes the search
    return SearchArguments(
        query=query,
        document_types=[str(t) for t in document_types],
        top_k=int(top_k),
    )


def format_practice_documents(results: list[RetrievalResult]) -> str:
    """Visible text inserted into the answer after a document search."""
    if not results:
        return ""
    return PRACTICE_DOCUMENTS_HEADER + "\n\n".join(result.text for result in results)
