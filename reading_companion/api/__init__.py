"""
API Package - FastAPI Router • Models • Retrieval • Prompting • RAG Pipeline
===========================================================================

Mission
-------
This package defines the HTTP interface of the reading companion and the
retrieval-augmented generation pipeline behind it: grounded context from the
book, persistent conversation memory and an adaptive reader profile.

Contents
--------
- fast_api
    FastAPI router: chat, feedback, session history, recent sessions.
- models
    Pydantic request/response models and the domain enumerations.
- query_analysis
    Keyword heuristics (complexity, topics, progress) and derived scores.
- retrieval
    Embedding client (LlamaIndex), chunk store accessor, context retriever.
- prompt_utilities
    Prompt composer (LangChain messages) and token budgeting.
- llm_pipeline
    Completion client (LangChain ChatOpenAI) and the response orchestrator.
"""
