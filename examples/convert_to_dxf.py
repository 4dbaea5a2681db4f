import ezgds


result = ezgds.to_dxf(
    "examples/data/chip.gds",
    "/tmp/chip_out.dxf",
    layer=1,
    dxf_version="R2010",
)
print(result)
