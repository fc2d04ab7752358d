"""Service layer connecting the pipeline to the API and CLI."""
