# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Quota-aware e-mail relay over a pool of web app delivery endpoints.

Features:
    - Endpoint list loaded from a remote document with caching and a local fallback
    - Per-endpoint daily quota accounting reset at the local day boundary
    - Least-used endpoint selection for single sends with a soft capacity threshold
    - Capacity-aware partitioning of bulk batches across endpoints
    - Immediate exhaustion on endpoint-reported quota errors
    - Prometheus metrics for monitoring
    - FastAPI REST API and click CLI

Example::

    from mail_relay.core import RelayCore
    from mail_relay.api import create_app
    from mail_relay.endpoints import StaticEndpointProvider

    core = RelayCore(provider=StaticEndpointProvider(["https://script.google.com/..."]))
    app = create_app(core, api_token="secret")
"""

__version__ = "2.0.0"
