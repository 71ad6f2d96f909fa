"""
Core Package

Contains the application-wide building blocks:
- config: Pydantic Settings loaded from the environment / .env
- logging: Unified "coco" logger and log helpers
- schemas: Pydantic models returned by storage primitives and services

Nothing in this layer talks to the network.
"""
