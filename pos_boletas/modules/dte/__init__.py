"""
Módulo de emisión de DTE (boletas electrónicas)

Pide un folio al allocator, arma el documento y lo envía al microservicio de
firma (SimpleAPI) junto con el CAF. Registra el resultado de cada emisión.

Un folio asignado queda consumido aunque la firma falle: la emisión queda
registrada como FAILED con el folio quemado para su anulación ante el SII.
"""
