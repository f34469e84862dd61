from dataclasses import dataclass
from typing import Optional

from ..builder import ValidatorChainBuilder
from ..config import CLIConfig


@dataclass
class CLIContext:
    """
    State shared between the root command and its subcommands, passed
    around as the ``click`` context object.
    """

    config: Optional[CLIConfig] = None
    """
    Parsed configuration file, if there was one.
    """

    def create_chain_builder(self) -> ValidatorChainBuilder:
        """
        Start a validator chain from the configuration, or from the
        defaults if no configuration was loaded.
        """
        if self.config is None:
            return ValidatorChainBuilder()
        return self.config.create_chain_builder()
