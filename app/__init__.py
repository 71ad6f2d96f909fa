"""
Application Package

Composition root for the market-data core: builds the caches, the logo
resolver and the services from settings, and exposes them through the
`coco` command line.
"""
