"""Asset pipelines driven by data-trunk elements in the source HTML."""