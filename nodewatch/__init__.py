"""nodewatch: мониторинг Ethereum-узлов с дедупликацией алертов."""

__version__ = "0.1.0"
