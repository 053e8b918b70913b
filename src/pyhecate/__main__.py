from pyhecate.main import app

app(prog_name="pyhecate")
