"""
SmartNotes Backend: Services Layer
=====================================

What:  Business logic between the routes (HTTP) and the database.

Service Inventory:
    - FileService:          upload validation, storage under /uploads, cleanup
    - TextExtractor:        Tesseract OCR with a low-confidence fallback pass
    - NoteGenerator (abstract) / GeminiNoteGenerator: study notes from text
    - NoteStore:            owner-scoped persistence, search and tags
    - NotePipeline:         upload → extract → generate → persist orchestration

The adapters (extractor, generator) never touch the database; only
NoteStore does, and only NotePipeline combines them.
"""
