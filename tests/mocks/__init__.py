from .mock_dispatcher import MockDispatcher
