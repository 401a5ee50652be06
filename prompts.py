"""
prompts.py — Prompts for per-file and whole-directory summaries.

Per-file prompts come in three flavours: the default summary, a SQL-focused
summary, and a free-form user question. Whole-directory prompts concatenate
file excerpts with a separator the model can key on.
"""

from __future__ import annotations
from typing import Optional


MAX_PROMPT_CONTENT_CHARS = 12000
FILE_SEPARATOR = "\n\n===FILE SEPARATOR===\n\n"

SYSTEM_PROMPT = """You are a senior engineer describing files in a directory listing.
Be specific and factual. Do not invent details that are not in the content.
Output only the requested text, with no preamble and no headers."""


def _clip(content: str, limit: int = MAX_PROMPT_CONTENT_CHARS) -> str:
    if len(content) > limit:
        return content[:limit] + "\n... [truncated for brevity]"
    return content


def _file_ctx(path: Optional[str]) -> str:
    return f"File: {path}\n" if path else ""


# ---------------------------------------------------------------------------
# Per-file
# ---------------------------------------------------------------------------

def file_summary_prompt(
    *,
    content: str,
    word_target: int,
    language: str,
    path: Optional[str] = None,
) -> str:
    return f"""Provide a summary of the following file content in approximately {word_target} words in {language}.
Focus on its main purpose, key elements, and important details.

{_file_ctx(path)}```
{_clip(content)}
```"""


def sql_summary_prompt(
    *,
    content: str,
    word_target: int,
    language: str,
    path: Optional[str] = None,
) -> str:
    return f"""Analyze the following SQL code and provide a summary in approximately {word_target} words in {language}.
Focus on: table operations (CREATE, ALTER, DROP), main table names,
key relationships, and important constraints or indices if present.

{_file_ctx(path)}```sql
{_clip(content)}
```"""


def custom_query_prompt(
    *,
    query: str,
    content: str,
    language: str,
    path: Optional[str] = None,
) -> str:
    return f"""{query} (respond in {language})

{_file_ctx(path)}```
{_clip(content)}
```"""


# ---------------------------------------------------------------------------
# Whole-directory
# ---------------------------------------------------------------------------

def directory_block(files: list[tuple[str, str]]) -> str:
    """Join (path, excerpt) pairs into the combined content of a batch request."""
    return FILE_SEPARATOR.join(
        f"File: {path}\nContent:\n{excerpt}" for path, excerpt in files
    )


def directory_overview_prompt(
    *,
    combined: str,
    word_target: int,
    language: str,
    root: Optional[str] = None,
) -> str:
    root_ctx = f"Directory: {root}\n" if root else ""
    return f"""Analyze the following files from one directory tree and write an overview in approximately {word_target} words in {language}.
Describe what the directory as a whole is for, the role of the main files,
and how they relate to each other.

{root_ctx}{_clip(combined, MAX_PROMPT_CONTENT_CHARS * 4)}"""


def directory_query_prompt(
    *,
    query: str,
    combined: str,
    language: str,
) -> str:
    return f"""{query} (respond in {language})

Analyze the following files to answer the question:

{_clip(combined, MAX_PROMPT_CONTENT_CHARS * 4)}"""
