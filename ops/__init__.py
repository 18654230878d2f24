"""Operations application for the medops backend.

This package holds the case pipeline, insurance pre-authorization and
finance ledger: models, services, serializers, views and route
registrations.
"""
