"""
Document module for managing document operations and database interactions.

This module provides functionality for:
- Document CRUD, pagination and aggregation
- MongoDB integration
- Collection naming, id generation and timestamps
- Index synchronization
"""
