# Routes package init
"""
Guestbook Backend: API Routes Package
======================================

Route Inventory:
    - visitors.py:  POST /api/visitors   (record a visitor, plain-text greeting)
                    GET  /api/visitors   (list visitor rows)
    - health.py:    GET  /health         (service health check)
    - frontend.py:  GET  /               (index.html; /static is mounted in main.py)

Routes stay thin: extract input, call a service, shape the response.
"""
