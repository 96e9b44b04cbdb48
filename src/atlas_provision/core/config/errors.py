# src/atlas_provision/core/config/errors.py
"""
Exceções da camada de configuração do Atlas Provision.

Cobrem falhas estruturais ao carregar e mesclar arquivos de configuração do
engine e arquivos de override de variáveis (por ambiente).

Invariantes:
    - Todas as exceções de configuração herdam de `ConfigError`
    - Nenhuma delas representa erro de declaração ou de apply
"""


class ConfigError(Exception):
    """
    Base para erros de configuração do engine.

    Permite capturar de forma genérica qualquer falha de carregamento ou
    merge, separando-a dos erros de declaração (`AtlasException`).
    """


class DefaultsNotFoundError(ConfigError):
    """
    Arquivo de defaults do projeto informado explicitamente, mas ausente.

    Decisões arquiteturais:
        - Um caminho informado é uma exigência: ausência é erro fatal
        - Sem caminho, apenas os defaults embutidos são usados
    """


class OverrideFileNotFoundError(ConfigError):
    """Arquivo de override de variáveis (por ambiente) não encontrado."""


class UnsupportedConfigFormatError(ConfigError):
    """
    Extensão de arquivo não suportada.

    Formatos aceitos: YAML (.yaml, .yml) e JSON (.json). O formato nunca é
    inferido pelo conteúdo.
    """


class InvalidConfigRootTypeError(ConfigError):
    """Conteúdo raiz do arquivo não é um mapa chave-valor."""


class ConfigTypeConflictError(ConfigError):
    """
    Conflito de tipos durante o deep-merge.

    Exemplo:
        - base:     {"apply": {"max_workers": 4}}
        - override: {"apply": "serial"}

    Nenhum merge parcial é produzido.
    """


class InvalidConfigValueError(ConfigError):
    """Valor de configuração fora do domínio aceito (ex.: `max_workers: 0`)."""
