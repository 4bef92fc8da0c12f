from .settings import BufferSettings, load_config, create_example_env_file, setup_logging

__all__ = ["BufferSettings", "load_config", "create_example_env_file", "setup_logging"]
