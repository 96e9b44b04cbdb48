# src/atlas_provision/__init__.py
"""
Atlas Provision — engine declarativo de expansão e reconciliação de recursos.

Este pacote raiz define o namespace público do Atlas Provision: declarações
de infraestrutura (resources, módulos, variáveis, locals, outputs) são
expandidas em instâncias endereçáveis, comparadas com o state persistido de
um workspace e reconciliadas por meio de um Provider externo.

Arquitetura em alto nível:
    - core.declarations → documentos YAML/JSON → ModuleTree
    - core.variables    → defaults, ambiente, arquivos e CLI → bindings
    - core.graph        → referências → DAG de avaliação
    - core.engine       → estado desejado, plan e apply
    - core.state        → state versionado por workspace
    - core.traceability → Manifest do apply

Limites explícitos:
    - Não fala com APIs de nuvem (Provider é um protocolo)
    - Não faz autenticação nem formatação de saída
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
