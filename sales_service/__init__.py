"""
Sales Service — 注文処理と売上分析のバックエンド

CQRS 構成:
  commands  : 注文トランザクション (Write 側)
  queries   : 顧客・商品・注文の参照 (Read 側)
  analytics : 売上集計 (Read 側)
"""
