"""Clinic application for the medical center backend.

This package contains the models, services, serializers and views
implementing the reception, doctor, billing, insurance and messaging
API used by the center dashboards.
"""
