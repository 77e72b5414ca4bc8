#!/usr/bin/env python3
"""
Orchestration Hub - REST and WebSocket API Module
"""
