"""
SmartNotes Backend: API Routes Package
=========================================

Route Inventory:
    - notes.py:   POST   /api/notes/process       (full pipeline)
                  POST   /api/notes/ocr-only      (extraction only)
                  GET    /api/notes/history       (paginated previews)
                  GET    /api/notes/recent        (latest previews)
                  GET    /api/notes/search        (free-text search)
                  GET    /api/notes/{id}          (full record)
                  DELETE /api/notes/{id}          (record + image)
                  POST   /api/notes/{id}/tags     (add tags)
                  DELETE /api/notes/{id}/tags     (remove tags)
    - upload.py:  POST   /api/upload/image        (store without processing)
    - files.py:   GET    /uploads/{filename}      (serve stored images)
    - health.py:  GET    /health                  (dependency status)

Routes stay thin: parse the request, call a service, shape the response.
"""
