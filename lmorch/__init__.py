"""lmorch: orchestration of language model calls

- language_models: messages, provider adapters, tools, runnable
    pipelines and the tool-calling agent
- memory: windowed, summary and session memories of conversations
- mcp: Model Context Protocol servers, registry and clients
- config: settings, read from config.toml and the environment
- utils: logging
"""

__version__ = "0.1.0"
