"""
The `database` package is responsible for all interactions with the application's database.
It provides configuration, entity definitions, data access and the services
that the RAG pipeline uses to persist conversations and learning profiles.

Contents:
    - config:
        Settings and the async engine / session factory builders.

    - entities:
        SQLAlchemy entity models representing the database tables and schemas.

    - daos:
        Data Access Objects (DAOs) providing CRUD and upsert operations for the entities.

    - helpers:
        Transaction management and dialect-aware upsert helpers.

    - core:
        Services that orchestrate DAOs: the conversation store and the
        learning profile manager.
"""
