"""
Módulo de Folios (CAF) - Boletas electrónicas

Administra los Códigos de Autorización de Folios entregados por el SII y
entrega el siguiente folio de cada (empresa, tipo de DTE) exactamente una vez.

ENTIDADES PRINCIPALES:
- Caf: rango autorizado de folios con su cursor de consumo y el XML original

FLUJO:
- parser: XML del CAF -> PermitDescriptor (sin efectos secundarios)
- service: ingesta del CAF (reemplaza o deja en espera al CAF vigente)
- allocator: consumo del siguiente folio con compare-and-swap sobre el cursor

ESTADOS DEL CAF:
- pending: cargado en espera, se activa cuando se agota el vigente
- active: vigente, a lo más uno por (empresa, tipo de DTE)
- exhausted: rango consumido completo (terminal)
- superseded: reemplazado por un CAF nuevo antes de agotarse (terminal)
"""
