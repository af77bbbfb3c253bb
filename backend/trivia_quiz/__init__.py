"""Application package for the trivia quiz backend.

This package exposes the service, repository and model modules used by
the FastAPI application, together with the quiz session state machine
and the question selection engine that sit behind the quiz endpoints.
"""
