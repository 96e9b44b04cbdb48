# src/atlas_provision/core/__init__.py
"""
Core do Atlas Provision.

Este pacote reúne a implementação canônica do engine, independente de CLI
e de providers concretos.

Componentes principais:
    - config       → configuração do engine (merge, validação, hashing)
    - declarations → carregamento de documentos de declaração (ModuleTree)
    - variables    → resolução em camadas dos valores de variáveis
    - expressions  → parser, funções e avaliador de expressões `${...}`
    - graph        → grafo de dependências entre declarações
    - expansion    → expansão de `count` / `for_each` em instâncias
    - state        → state persistido por workspace, com lock
    - engine       → plan, apply e diff
    - traceability → Manifest e Event Log do apply

Princípios fundamentais:
    - Nenhuma decisão silenciosa: todo comportamento é explícito e testado
    - O workspace é um valor explícito, nunca estado global
    - Efeitos colaterais ficam atrás dos protocolos Provider e StateBackend

Limites explícitos:
    - Não implementa providers de nuvem
    - Não contém front end de linha de comando
"""
