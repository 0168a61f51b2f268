"""
EzyOlive Practice API

A FastAPI-based practice management backend: appointment booking with
conflict checking, doctor availability and slot suggestions, invoicing
and payment processing, with role-based access control and an audit log.
"""

__version__ = "1.0.0"
