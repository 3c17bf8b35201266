from fastapi import APIRouter


class CoreModule:
    def __init__(
        self,
        root: str,
        tag: str,
        router: APIRouter | None = None,
    ):
        """
        Initialize a new CoreModule object.
        :param root: the root of the module, all its endpoints should be prefixed by `/<root>`
        :param tag: the tag of the module, used by FastAPI
        :param router: an optional custom APIRouter
        """
        self.root = root
        self.router = router or APIRouter(tags=[tag])


class Module(CoreModule):
    """
    A feature module, discovered from `app/modules/*/endpoints_*.py`.
    Core modules are discovered from `app/core/*/endpoints_*.py` and should declare a `core_module` instead.
    """
