"""Multiplayer session core: rules, durable store, advisory cache, engine.

Transport concerns (REST, Socket.IO) import from here; nothing in this
package emits to clients.
"""
