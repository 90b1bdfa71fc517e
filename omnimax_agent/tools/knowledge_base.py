"""Knowledge base search over a LangChain vector store."""

from __future__ import annotations

import logging

from langchain_core.tools import BaseTool, StructuredTool
from langchain_core.vectorstores import VectorStore
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_TOOL = "knowledge_base_search"


class KnowledgeBaseArgs(BaseModel):
    query: str = Field(..., description="The question or topic to search for in the knowledge base.")


def create_knowledge_base_tool(vector_store: VectorStore, top_k: int = 3) -> BaseTool:
    """Build a search tool returning the ``top_k`` most similar snippets."""

    async def knowledge_base_search(query: str) -> str:
        logger.info(f"Searching knowledge base for: {query!r}")
        try:
            documents = await vector_store.asimilarity_search(query, k=top_k)
        except Exception as exc:
            logger.error(f"Knowledge base search failed: {exc}")
            return f"Error searching knowledge base: {exc}"

        if not documents:
            return "No relevant information found in the knowledge base for this query."

        snippets = "\n\n".join(
            f"--- Context Snippet {index} (Source: {doc.metadata.get('source', 'N/A')}) ---\n"
            f"{doc.page_content}"
            for index, doc in enumerate(documents, start=1)
        )
        return f"[START OF CONTEXT FROM KNOWLEDGE BASE]\n\n{snippets}\n\n[END OF CONTEXT]"

    return StructuredTool.from_function(
        coroutine=knowledge_base_search,
        name=KNOWLEDGE_BASE_TOOL,
        description=(
            "Searches the local knowledge base for documents relevant to a query. Use this for "
            "internal procedures, product information or saved notes."
        ),
        args_schema=KnowledgeBaseArgs,
    )
