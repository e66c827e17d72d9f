"""Service layer for certificate generation.

Layer hierarchy:
    Routes (HTTP) -> Services (pipeline, publishing) -> Pinata / template host

Services return result values (PipelineSuccess / PipelineFailure) and never
know about HTTP status codes; routes do the conversion.
"""
