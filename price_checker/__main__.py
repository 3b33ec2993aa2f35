from price_checker.main import run

run()
