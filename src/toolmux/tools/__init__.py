"""Tool framework: descriptors, staged events, registry, and web search.

Every tool, whether served by a subprocess provider or a remote search
backend, is exposed as a :class:`~toolmux.tools.base.ToolDescriptor` and
merged into one :class:`~toolmux.tools.registry.ToolRegistry`.
"""
