from typing import Any, MutableMapping

from jinja2 import BaseLoader, ChoiceLoader, Environment, PackageLoader, PrefixLoader, StrictUndefined, Template


class TemplateEnvironment(Environment):
    """Prompt templates, looked up as ``<lang>/<name>``.

    The package ships English templates under ``templates/en``. Loaders
    registered with :meth:`add_loaders` take precedence over the packaged
    ones for their language, so a deployment can override single prompts.
    """

    def __init__(self, package_name: str = "agentloop", default_lang: str | None = None):
        self.default_lang = default_lang or 'en'
        self.loader_map: dict[str, list[BaseLoader]] = {
            'en': [PackageLoader(package_name, package_path="templates/en")],
        }
        super().__init__(
            loader=self._prefix_loader(),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
            undefined=StrictUndefined,
            autoescape=False,
        )

    def _prefix_loader(self) -> PrefixLoader:
        return PrefixLoader({lang: ChoiceLoader(loaders) for lang, loaders in self.loader_map.items()})

    def add_loaders(self, *loaders: BaseLoader, **by_lang: BaseLoader | list[BaseLoader]):
        """Prepend loaders; positional ones apply to the default language."""
        if loaders:
            self.loader_map[self.default_lang] = list(loaders) + self.loader_map.get(self.default_lang, [])
        for lang, extra in by_lang.items():
            extra = [extra] if isinstance(extra, BaseLoader) else list(extra)
            self.loader_map[lang] = extra + self.loader_map.get(lang, [])
        self.loader = self._prefix_loader()
        if self.cache is not None:
            self.cache.clear()

    def load_template(self, name: str, lang: str | None = None,
                      globals: MutableMapping[str, Any] | None = None) -> Template:
        """Resolve *name* in *lang*, then the default language, then English, then anything else."""
        order = list(dict.fromkeys(l for l in (lang, self.default_lang, 'en') if l))
        order += [l for l in self.loader_map if l not in order]
        return self.select_template([f"{l}/{name}" for l in order], globals=globals)
