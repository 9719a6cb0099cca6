# Services package init
"""
Guestbook Backend: Services Layer
==================================

What:  Business logic between routes (HTTP) and the CouchDB client.
How:   Services accept plain values and a database handle, apply the
       business rules and return results. Routes stay thin.

Service Inventory:
    - VisitorService: record a visitor, list visitors
"""
