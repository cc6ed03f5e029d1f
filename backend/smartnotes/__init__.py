"""
SmartNotes Backend: Application Package
=========================================

Turns a photo of printed or handwritten material into study notes:

    upload → OCR (Tesseract) → note generation (Gemini) → persist

Layering:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Pipeline + Adapters (Services)     │  ← Orchestration, OCR, LLM, files
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
