from stock_ledger import create_app

app = create_app()
